"""Source collection: local files, directory trees and GitHub."""

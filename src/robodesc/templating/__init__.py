"""XACRO preprocessing and expansion."""

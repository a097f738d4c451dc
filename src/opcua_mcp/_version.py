# file kept in sync with the release tag
__version__ = version = "0.1.0"
__version_tuple__ = version_tuple = (0, 1, 0)

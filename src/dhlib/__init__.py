from .version import IS_RELEASE_BUILD, __version__

# Locations searched for data files (such as autoscripts) by default
DEFAULT_DATA_DIRS = ("/usr/share/debhelper",)

"""Drive (file tree and quota) settings."""

from server.settings.components import config

# Default quota for new users: 5 GB in bytes
DRIVE_DEFAULT_QUOTA_BYTES = config(
    'DRIVE_DEFAULT_QUOTA_BYTES',
    cast=int,
    default=5 * 1024 * 1024 * 1024,
)

# Upper bound for folder nesting walked by traversals
DRIVE_MAX_FOLDER_DEPTH = config('DRIVE_MAX_FOLDER_DEPTH', cast=int, default=256)

# Search limits
DRIVE_SEARCH_MAX_RESULTS = config(
    'DRIVE_SEARCH_MAX_RESULTS',
    cast=int,
    default=50,
)
DRIVE_SEARCH_MAX_QUERY_LENGTH = config(
    'DRIVE_SEARCH_MAX_QUERY_LENGTH',
    cast=int,
    default=100,
)

# Listing limits
DRIVE_RECENT_LIMIT = config('DRIVE_RECENT_LIMIT', cast=int, default=10)
DRIVE_DASHBOARD_LIMIT = config('DRIVE_DASHBOARD_LIMIT', cast=int, default=5)

# Time zone used for calendar-day queries
DRIVE_REFERENCE_TIMEZONE = config('DRIVE_REFERENCE_TIMEZONE', default='UTC')

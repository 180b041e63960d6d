"""Shared constants for venue encodings and alert defaults."""

# Venue expiry tokens use fixed English month abbreviations, independent of locale
MONTH_ABBR = ["JAN", "FEB", "MAR", "APR", "MAY", "JUN",
              "JUL", "AUG", "SEP", "OCT", "NOV", "DEC"]

# Deribit weekly and monthly options expire on Fridays
EXPIRY_WEEKDAY = 4  # datetime.weekday(): Monday=0

PUT_MARKER = "P"
CALL_MARKER = "C"

# Callback payload actions sent with alert messages
ACTION_KEEP = "keep"
ACTION_REMOVE_PRICE = "rm_price"
ACTION_REMOVE_CHANGE = "rm_change"
ACTION_EDIT = "edit"
ACTION_SAVE_SUGGESTION = "save"

import os

# Settings are read once at import time, so the test environment must be in
# place before anything under app/ is imported.
os.environ["BOOKING_STORE_PROVIDER"] = "memory"
os.environ["ENV"] = "local"
os.environ["EVENT_BUS_PROVIDER"] = "noop"

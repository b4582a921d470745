"""
Worker Configuration for Document Conversion Platform
Defines worker pool sizes and operational parameters
"""
import os

# Conversion pool size - one worker per available processing unit
CONVERSION_WORKERS = os.cpu_count() or 1

# Queue timeouts (seconds)
QUEUE_TIMEOUT = 5

# Back-off after an unexpected error in a worker loop (seconds)
ERROR_BACKOFF = 5

# Router scan interval (seconds)
SCAN_INTERVAL = 10

# Maximum number of filenames remembered by the router's local filter
LOCAL_FILTER_SIZE = 1000

# Process monitor settings
MONITOR_INTERVAL = 10 * 60  # 10 minutes
MONITORED_BINARY = "soffice.bin"
MEMORY_THRESHOLD_PERCENT = 10.0
KILL_TIMEOUT = 10  # seconds to wait for a killed process to exit

# Shutdown grace period (seconds)
SHUTDOWN_GRACE_PERIOD = 60

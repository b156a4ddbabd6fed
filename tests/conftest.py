import os
import tempfile

# Must be set before config.settings is created on first import
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["EMAIL_DELIVERY"] = "worker"
os.environ["RATE_LIMIT_JOBS"] = "1000/hour"
os.environ["RATE_LIMIT_API"] = "10000/15minutes"
os.environ["LOG_FILE"] = os.path.join(tempfile.gettempdir(), "website-optimizer-test.log")

#!/usr/bin/env python
"""Local development script for running sensor-ingest."""
import os
import uvicorn

# Set environment variables for local development
os.environ.update({
    "DEBUG": "true",
    "HOST": "127.0.0.1",
    "PORT": "5000",
    "MONGO_URI": os.environ.get("MONGO_URI", "mongodb://localhost:27017"),
    "DB_NAME": os.environ.get("DB_NAME", "sensor_data"),
    "DB_MAX_RETRIES": "3",
})

if __name__ == "__main__":
    print("Starting sensor-ingest in development mode")
    print("API: http://127.0.0.1:5000")
    print("Docs: http://127.0.0.1:5000/docs")

    # Run with auto-reload
    uvicorn.run("main:app", host="127.0.0.1", port=5000, reload=True, timeout_graceful_shutdown=10)

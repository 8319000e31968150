#!/usr/bin/env python
"""Command-line client for the sensor-ingest HTTP API.

Checks service health, ingests a sample batch (including a deliberate
duplicate), triggers synthetic generation and prints the resulting stats.
"""
import requests
import random
import time
import sys
import argparse

SERVICE_URL = "http://127.0.0.1:5000"

def check_service(base_url):
    """Check if the service is running."""
    try:
        response = requests.get(f"{base_url}/health", timeout=5)
        health = response.json()
        print(f"sensor-ingest: {health['status']}")
        print(f"Database: {health.get('database', {}).get('status', 'unknown')}")
        return True
    except (requests.RequestException, ValueError) as e:
        print(f"Error connecting to service: {e}")
        print("\nMake sure the sensor-ingest service is running first!")
        return False

def print_rate_limit(response):
    remaining = response.headers.get("X-RateLimit-Remaining")
    if remaining is not None:
        print(f"Rate limit: {remaining}/{response.headers.get('X-RateLimit-Limit')} remaining, "
              f"resets {response.headers.get('X-RateLimit-Reset')}")

def sample_records(count, prefix="CLI"):
    """Build ``count`` valid records plus one duplicate of the first."""
    run_id = int(time.time())
    records = [
        {
            "recordId": f"{prefix}-{run_id}-{i:04d}",
            "timestamp": int(time.time() * 1000),
            "temperature": round(random.uniform(-10, 50), 2),
            "humidity": round(random.uniform(0, 100), 2),
            "location": random.choice(["Berlin", "London", "Tokyo"]),
            "status": random.choice(["active", "inactive", "error"]),
            "metadata": {"source": "load-client", "version": "1.0"},
        }
        for i in range(count)
    ]
    if records:
        records.append(dict(records[0]))
    return records

def ingest(base_url, count):
    """Ingest a sample batch and report per-record failures."""
    records = sample_records(count)
    try:
        response = requests.post(f"{base_url}/api/data/ingest", json=records, timeout=30)
    except requests.RequestException as e:
        print(f"❌ Ingest error: {e}")
        return None

    print_rate_limit(response)
    if response.status_code != 201:
        print(f"❌ Error: {response.status_code} - {response.text}")
        return None

    result = response.json()
    print(f"\n✅ {result['message']}: saved {result['savedCount']}, failed {result['failedCount']}")
    for error in result.get("errors", []):
        print(f"  [{error['index']}] {error['error']}")
    return result

def generate(base_url, count, batch_size):
    """Trigger synthetic data generation."""
    try:
        response = requests.post(
            f"{base_url}/api/data/generate",
            json={"count": count, "batchSize": batch_size},
            timeout=300
        )
    except requests.RequestException as e:
        print(f"❌ Generate error: {e}")
        return None

    print_rate_limit(response)
    if response.status_code == 429:
        print(f"❌ Rate limited, retry after {response.headers.get('Retry-After')}s")
        return None
    if response.status_code != 201:
        print(f"❌ Error: {response.status_code} - {response.text}")
        return None

    result = response.json()
    print(f"\n✅ Inserted {result['inserted']} records in {result['durationMs']}ms "
          f"({result['ratePerSecond']} records/s)")
    return result

def get_stats(base_url):
    """Print record statistics."""
    try:
        response = requests.get(f"{base_url}/api/data/stats", timeout=10)
    except requests.RequestException as e:
        print(f"❌ Stats error: {e}")
        return None

    if response.status_code != 200:
        print(f"❌ Error getting stats: {response.status_code} - {response.text}")
        return None

    stats = response.json()
    print("\n=== Record Stats ===")
    print(f"Total records: {stats['total']}")
    for status, count in sorted(stats.get("byStatus", {}).items()):
        print(f"  {status}: {count}")
    print(f"Average temperature: {stats['averageTemperature']:.2f}")
    print(f"Average humidity: {stats['averageHumidity']:.2f}")
    return stats

def main():
    """Run the example workflow against a running service."""
    parser = argparse.ArgumentParser(description="Client for the sensor-ingest API")
    parser.add_argument("--url", help=f"Service URL (default: {SERVICE_URL})", default=SERVICE_URL)
    parser.add_argument("--ingest", "-n", type=int, default=5, help="Number of records to ingest")
    parser.add_argument("--generate", "-g", type=int, default=0, help="Number of records to generate")
    parser.add_argument("--batch-size", "-b", type=int, default=1000, help="Generation batch size")
    parser.add_argument("--stats", "-s", action="store_true", help="Only print stats")
    args = parser.parse_args()

    if not check_service(args.url):
        sys.exit(1)

    if args.stats:
        get_stats(args.url)
        return

    if args.ingest > 0:
        ingest(args.url, args.ingest)

    if args.generate > 0:
        generate(args.url, args.generate, args.batch_size)

    get_stats(args.url)

if __name__ == "__main__":
    main()

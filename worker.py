#!/usr/bin/env python3
"""Worker process entry point for embedding generation.

Usage:
    python worker.py

The worker will:
1. Validate configuration and connect to the queue backend
2. Pull pending items from the queue, oldest first
3. Build each candidate/job payload and call the embedding function
4. Retry failures up to MAX_ATTEMPTS, then mark them failed
5. Run until stopped (Ctrl+C / SIGTERM)
"""

from embedding_queue.lifecycle import main

if __name__ == "__main__":
    main()

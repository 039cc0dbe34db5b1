"""Crawl queue worker."""

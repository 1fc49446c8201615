# Copyright (c) 2025 Henru Wang
# All rights reserved.

"""Integration tests for the outline context cache.

These tests drive the service against real outline documents, linked files
and cache files on disk.
"""

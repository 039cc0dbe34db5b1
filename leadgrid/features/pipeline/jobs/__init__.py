"""Pipeline queue workers."""

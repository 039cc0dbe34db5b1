"""
Geographically partitioned crawling.

A task searches one query over a grid of coordinates, persisting every
point so an interrupted run resumes where it stopped. Aggregate tasks fan a
keyword x city batch out into many tasks.
"""

"""
Lead pipeline: rating, enrichment and CRM sync.

Each stage is an independent status axis on the lead, moved only by
compare-and-set transitions.
"""

"""Review queue — scoring, aggregation, and caller-side selection.

The queue provides:
- Scoring: risk buckets, age boosts and subject multipliers
- Aggregation: flags and reports merged, filtered and sorted
- Selection: the reviewer's working set for bulk actions
"""

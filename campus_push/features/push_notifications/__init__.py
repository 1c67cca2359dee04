"""
Push notification feature package.

Everything the scheduled and manual notification flows need lives here:
domain models, the dispatch pipeline (time windows, eligibility, dedup,
batching, result handling), the directory repository, the push gateways,
job definitions and the scheduler that drives them.
"""

"""
Canvas Watch Test Suite

Structure:
- unit/: coordinate model, comparison, tracker, repository, tile fetch, notify, config
- integration/: full reconciliation cycles through the watch service and status API
"""

"""
Scheduling Engine Tests

Running Tests:
    # Run all tests with pytest
    pytest -v

    # Run one module
    pytest tests/unit/test_conflicts.py -v

Test Coverage:
    - Interval and availability membership
    - Conflict detection (availability, overlaps, self-edit exemption)
    - Memoization cache and compatibility scoring
    - Alternative-time search and recommender degradation
    - Batch optimization (ordering, in-batch collisions, cancellation,
      failure isolation)
    - HTTP routes
"""

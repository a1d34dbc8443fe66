"""
Scheduler services

- scheduler_types: value objects shared by builder, solver and apply
- problem_spec_builder: reads season data through repositories into a ProblemSpec
- scheduler_engine: pure solver, ProblemSpec in, SolveResult out
- apply_service: re-validates and commits a proposal once per idempotency key

Services take repositories in their constructors and never touch HTTP objects.
"""

"""
PetContest backend.

Daily pet photo competition: lifecycle engine, vote integrity guard and
the scheduler that drives them.
"""
__version__ = "1.0.0"

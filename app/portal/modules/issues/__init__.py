"""
Issue reporting: lifecycle rules, orchestration service and JSON routes.
"""

"""
SMX Chart Votes - Single-process application.

Lets players browse StepManiaX charts and vote on whether each chart's
difficulty rating is accurate.  Chart data comes from the public SMX API;
votes are kept in SQLite.
"""

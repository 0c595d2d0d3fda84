"""
Psychometric tests (enterprise plan).

Candidates take tests through public token links; scoring and the personality,
cognitive and category analyses run server-side on submit.
"""

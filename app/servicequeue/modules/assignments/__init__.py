"""
Assignment change workflow: agents propose a reassignment, managers approve or reject it.
"""

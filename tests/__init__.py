"""
Test suite for progresstracker.

Unit tests for the models, services, utilities and command line tasks.
"""

"""
donorsignal.utils
=================
Clock, validation and test-data helpers.
"""

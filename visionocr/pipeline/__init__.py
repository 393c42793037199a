"""
Pipeline control for one document run.

State machine:  orchestrator.py
Cancellation:   cancellation.py (explicit cancel + wall-clock deadline)
"""

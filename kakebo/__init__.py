"""
Kakebo Assistant - Core Package

The conversational core of the Kakebo budgeting assistant: a language
model answers questions about a user's budget by calling data tools,
and every tool result is validated before the model may use it.

DESIGN PRINCIPLES:
1. The model asks, the tools answer, the validator decides
2. Fail visibly: an error is disclosed, never papered over with numbers
3. Every answer names its period and how much data backs it
4. Learning never blocks answering
5. Storage and language model are swappable
"""

__version__ = "1.0.0"
__author__ = "Kakebo Assistant Team"

"""Domain services.

Transport-free logic imported by HTTP routes and socket handlers, keeping
Flask and Socket.IO concerns separated from room state and its merge rules.
"""

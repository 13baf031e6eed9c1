"""
Polling data gateway: simulator REST API -> MQTT broker or text file.
"""

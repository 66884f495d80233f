"""
Followup delivery for PRIMA reminders: message rendering, the WhatsApp
channel adapter and the executor that sends claimed jobs
"""

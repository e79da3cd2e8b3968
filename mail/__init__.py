"""mail/ -- Outbound account email (welcome and password-reset messages).

Layer rule: mail/ imports from auth.models and core/ only. It never raises
into the request path; callers go through send_quietly().
"""

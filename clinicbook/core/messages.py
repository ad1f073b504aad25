"""
User-facing messages.

The clinics are German-speaking, so every string a client can see is kept
here in German. Log messages stay in English.
"""

# Generic
UNEXPECTED_ERROR = "Ein unerwarteter Fehler ist aufgetreten"
NOT_AUTHENTICATED = "Nicht authentifiziert"
PROFILE_NOT_FOUND = "Profil nicht gefunden"
REQUIRED_FIELDS_MISSING = "Bitte fülle alle Pflichtfelder aus"
ALL_FIELDS_REQUIRED = "Bitte fülle alle Felder aus"

# Tenants
TENANT_REFERENCE_REQUIRED = "tenantSlug or tenantId is required"
TENANT_NOT_FOUND = "Tenant nicht gefunden"
CLINIC_NOT_FOUND = "Klinik nicht gefunden"

# Embeddings
EMBEDDING_GENERATION_FAILED = "Fehler bei der Embedding-Generierung"

# Sessions
LOGIN_FIELDS_REQUIRED = "Bitte Email und Passwort eingeben"
WRONG_CREDENTIALS = "Email oder Passwort ist falsch"
ACCOUNT_CREATION_FAILED = "Fehler beim Erstellen des Accounts"
CLINIC_CREATION_FAILED = "Fehler beim Erstellen der Klinik"

# Confirmation
APPOINTMENT_NOT_FOUND = "Termin nicht gefunden"
APPOINTMENT_ALREADY_CLOSED = "Dieser Termin kann nicht mehr geändert werden"

# Waitlist
CONTACT_REQUIRED = "E-Mail oder Telefonnummer erforderlich"
WAITLIST_ENTRY_NOT_FOUND = "Eintrag nicht gefunden"
NO_PHONE_ON_FILE = "Kein Telefon hinterlegt"
INVALID_WAITLIST_STATUS = "Ungültiger Status"
DEFAULT_SERVICE_NAME = "Ihr gewünschter Service"

# Packages
PACKAGE_NOT_FOUND = "Paket nicht gefunden"
PACKAGE_NOT_ACTIVE = "Paket ist nicht aktiv"
PACKAGE_NO_USES_LEFT = "Keine Verwendungen mehr übrig"
PACKAGE_LIMIT_REACHED = "Dieser Kunde hat bereits die maximale Anzahl ({limit}) dieses Pakets"

# Social media
REVIEW_NOT_FOUND = "Bewertung nicht gefunden"

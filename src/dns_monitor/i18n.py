"""
Internationalization (i18n) module for the DNS monitor.

Provides translations for alert templates and CLI output in English (en)
and German (de).
"""

from typing import Optional


SUPPORTED_LANGUAGES = frozenset({"de", "en"})
DEFAULT_LANGUAGE = "en"


# Structure: {message_key: {language_code: translated_message}}
TRANSLATIONS: dict[str, dict[str, str]] = {
    # Alert titles
    "alert.authority_lost.title": {
        "en": "⚠️ <b>DNS Authority Unreachable</b>",
        "de": "⚠️ <b>DNS-Autorität nicht erreichbar</b>",
    },
    "alert.cert_error.title": {
        "en": "🚨 <b>CRITICAL: Certificate Validation Error</b>",
        "de": "🚨 <b>KRITISCH: Fehler bei der Zertifikatsprüfung</b>",
    },
    "alert.cert_changed.title": {
        "en": "🚨 <b>Unexpected Certificate Change</b>",
        "de": "🚨 <b>Unerwarteter Zertifikatswechsel</b>",
    },
    "alert.ip_changed.title": {
        "en": "⚠️ <b>DNS IP Change Detected</b>",
        "de": "⚠️ <b>DNS-IP-Änderung erkannt</b>",
    },
    "alert.soa_updated.title": {
        "en": "📝 <b>DNS Zone Updated</b>",
        "de": "📝 <b>DNS-Zone aktualisiert</b>",
    },
    "alert.critical.title": {
        "en": "🚨🚨 <b>CRITICAL: Concurrent IP and Certificate Changes</b>",
        "de": "🚨🚨 <b>KRITISCH: Gleichzeitige IP- und Zertifikatsänderung</b>",
    },

    # Alert field labels
    "label.domain": {"en": "Domain", "de": "Domain"},
    "label.time": {"en": "Time", "de": "Zeit"},
    "label.error": {"en": "Error", "de": "Fehler"},
    "label.target_ip": {"en": "Probed IP", "de": "Geprüfte IP"},
    "label.previous_ips": {"en": "Previous IPs", "de": "Vorherige IPs"},
    "label.new_ips": {"en": "New IPs", "de": "Neue IPs"},
    "label.technical_details": {"en": "Technical Details", "de": "Technische Details"},
    "label.dns_status": {"en": "DNS Status", "de": "DNS-Status"},
    "label.record_type": {"en": "Record Type", "de": "Eintragstyp"},
    "label.record_count": {"en": "Number of Records", "de": "Anzahl Einträge"},
    "label.soa_serial": {"en": "SOA Serial", "de": "SOA-Seriennummer"},
    "label.previous_serial": {"en": "Previous Serial", "de": "Vorherige Seriennummer"},
    "label.new_serial": {"en": "New Serial", "de": "Neue Seriennummer"},
    "label.primary_ns": {"en": "Primary NS", "de": "Primärer NS"},
    "label.admin_email": {"en": "Admin Email", "de": "Admin-E-Mail"},
    "label.refresh": {"en": "Refresh", "de": "Refresh"},
    "label.retry": {"en": "Retry", "de": "Retry"},
    "label.expire": {"en": "Expire", "de": "Expire"},
    "label.min_ttl": {"en": "Min TTL", "de": "Min. TTL"},
    "label.current_certificate": {"en": "Current Certificate", "de": "Aktuelles Zertifikat"},
    "label.previous_certificate": {"en": "Previous Certificate", "de": "Vorheriges Zertifikat"},
    "label.none_recorded": {"en": "None recorded", "de": "Keines gespeichert"},
    "label.issuer": {"en": "Issuer", "de": "Aussteller"},
    "label.subject": {"en": "Subject", "de": "Inhaber"},
    "label.valid_from": {"en": "Valid From", "de": "Gültig ab"},
    "label.valid_to": {"en": "Valid To", "de": "Gültig bis"},
    "label.fingerprint": {"en": "Fingerprint", "de": "Fingerabdruck"},
    "label.ip_change": {"en": "IP Change", "de": "IP-Änderung"},
    "label.cert_change": {"en": "Certificate Change", "de": "Zertifikatsänderung"},
    "label.time_window": {"en": "Time Window", "de": "Zeitfenster"},
    "label.minutes": {"en": "{minutes} minutes", "de": "{minutes} Minuten"},
    "label.last_ip_change": {"en": "Last IP Change", "de": "Letzte IP-Änderung"},
    "label.last_cert_change": {"en": "Last Cert Change", "de": "Letzte Zertifikatsänderung"},
    "label.none": {"en": "none", "de": "keine"},
    "label.unknown": {"en": "unknown", "de": "unbekannt"},

    # CLI output
    "cli.tick_started": {
        "en": "Checking {count} domain(s)...",
        "de": "Prüfe {count} Domain(s)...",
    },
    "cli.domain_initialized": {
        "en": "{domain}: baseline initialized",
        "de": "{domain}: Ausgangszustand angelegt",
    },
    "cli.domain_no_changes": {
        "en": "{domain}: no changes",
        "de": "{domain}: keine Änderungen",
    },
    "cli.domain_events": {
        "en": "{domain}: {events}",
        "de": "{domain}: {events}",
    },
    "cli.domain_skipped": {
        "en": "{domain}: skipped (check already in progress)",
        "de": "{domain}: übersprungen (Prüfung läuft bereits)",
    },
    "cli.domain_failed": {
        "en": "{domain}: FAILED - {error}",
        "de": "{domain}: FEHLER - {error}",
    },
    "cli.summary": {
        "en": "Summary: {checked} checked, {events} event(s), {failed} failed",
        "de": "Zusammenfassung: {checked} geprüft, {events} Ereignis(se), {failed} fehlgeschlagen",
    },
    "cli.no_state": {
        "en": "No stored state for {domain}",
        "de": "Kein gespeicherter Zustand für {domain}",
    },
    "cli.no_ips": {
        "en": "No IPs found for {domain}",
        "de": "Keine IPs für {domain} gefunden",
    },
    "cli.watch_started": {
        "en": "Watching {count} domain(s) on schedule '{cron}'",
        "de": "Überwache {count} Domain(s) nach Zeitplan '{cron}'",
    },

    # Simulation mode
    "simulation.enabled": {
        "en": "Dry run: alerts are logged, not sent; state is not written",
        "de": "Testlauf: Alarme werden protokolliert, nicht gesendet; Zustand wird nicht gespeichert",
    },

    # Self-test
    "selftest.started": {
        "en": "Running startup self-test...",
        "de": "Starte Selbsttest...",
    },
    "selftest.passed": {
        "en": "Self-test passed",
        "de": "Selbsttest erfolgreich",
    },
    "selftest.failed": {
        "en": "Self-test failed",
        "de": "Selbsttest fehlgeschlagen",
    },
    "selftest.config_invalid": {
        "en": "Configuration is invalid:",
        "de": "Konfiguration ist ungültig:",
    },
    "selftest.warnings": {
        "en": "Warnings:",
        "de": "Warnungen:",
    },
    "selftest.endpoint_ok": {
        "en": "✓ {endpoint} ({time_ms:.0f}ms)",
        "de": "✓ {endpoint} ({time_ms:.0f}ms)",
    },
    "selftest.endpoint_failed": {
        "en": "✗ {endpoint}: {error}",
        "de": "✗ {endpoint}: {error}",
    },
}


def get_message(
    key: str,
    language: Optional[str] = None,
    **kwargs,
) -> str:
    """
    Get a translated message by key.

    Args:
        key: The message key (e.g., 'label.domain')
        language: Language code ('de' or 'en'). Defaults to DEFAULT_LANGUAGE.
        **kwargs: Format arguments for the message template

    Returns:
        The translated and formatted message string.
        If the key is not found, returns the key itself.

    Examples:
        >>> get_message('label.time', 'de')
        'Zeit'
        >>> get_message('label.minutes', 'en', minutes=5)
        '5 minutes'
    """
    if language is None or language not in SUPPORTED_LANGUAGES:
        language = DEFAULT_LANGUAGE

    translations = TRANSLATIONS.get(key)
    if translations is None:
        return key

    message = translations.get(language) or translations.get(DEFAULT_LANGUAGE)
    if message is None:
        return key

    if kwargs:
        try:
            message = message.format(**kwargs)
        except (KeyError, ValueError):
            pass

    return message


def get_all_message_keys() -> set[str]:
    """Get all available message keys."""
    return set(TRANSLATIONS.keys())


def has_translation(key: str, language: str) -> bool:
    """Check if a translation exists for a key and language."""
    translations = TRANSLATIONS.get(key)
    if translations is None:
        return False
    return language in translations


def get_missing_translations(language: str) -> set[str]:
    """Get all message keys that are missing translations for a language."""
    return {
        key for key, translations in TRANSLATIONS.items()
        if language not in translations
    }


def validate_translations() -> dict[str, set[str]]:
    """
    Validate that all languages have all translations.

    Returns:
        Dictionary mapping language codes to sets of missing message keys.
        Empty sets indicate complete translations.
    """
    return {
        language: get_missing_translations(language)
        for language in SUPPORTED_LANGUAGES
    }

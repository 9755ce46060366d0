"""Lifecycle email templates (French default, English supported).

Each kind renders to a subject plus matching HTML and text bodies. Context
values are escaped before they reach the HTML body.
"""

from dataclasses import dataclass
from enum import Enum
from html import escape as html_escape
from typing import Any

SUPPORTED_LANGUAGES = ("fr", "en")


class EmailKind(str, Enum):
    SUBSCRIPTION_CONFIRMED = "subscription_confirmed"
    SUBSCRIPTION_CANCELLED = "subscription_cancelled"
    PAYMENT_FAILED = "payment_failed"
    DELETION_CONFIRMATION = "deletion_confirmation"
    ACCOUNT_DELETED = "account_deleted"
    QUOTA_WARNING = "quota_warning"
    QUOTA_LIMIT_REACHED = "quota_limit_reached"


@dataclass(frozen=True)
class RenderedEmail:
    subject: str
    html_body: str
    text_body: str


# (subject, paragraphs) per kind and language. Paragraphs are str.format
# templates over the context dict.
_COPY: dict[EmailKind, dict[str, tuple[str, list[str]]]] = {
    EmailKind.SUBSCRIPTION_CONFIRMED: {
        "fr": (
            "Bienvenue dans Premium !",
            [
                "Bonjour {name},",
                "Votre abonnement Premium est actif. Vous pouvez désormais générer "
                "jusqu'à {max_letters} lettres par période.",
            ],
        ),
        "en": (
            "Welcome to Premium!",
            [
                "Hi {name},",
                "Your Premium subscription is active. You can now generate up to "
                "{max_letters} letters per period.",
            ],
        ),
    },
    EmailKind.SUBSCRIPTION_CANCELLED: {
        "fr": (
            "Votre abonnement a été annulé",
            [
                "Bonjour {name},",
                "Votre abonnement Premium a été annulé. Vous conservez l'accès "
                "jusqu'au {end_date}.",
            ],
        ),
        "en": (
            "Your subscription has been cancelled",
            [
                "Hi {name},",
                "Your Premium subscription has been cancelled. You keep access "
                "until {end_date}.",
            ],
        ),
    },
    EmailKind.PAYMENT_FAILED: {
        "fr": (
            "Échec du paiement de votre abonnement",
            [
                "Bonjour {name},",
                "Nous n'avons pas pu encaisser votre paiement de {amount} {currency}. "
                "Merci de mettre à jour votre moyen de paiement.",
                "Facture : {invoice_url}",
            ],
        ),
        "en": (
            "Your subscription payment failed",
            [
                "Hi {name},",
                "We could not collect your payment of {amount} {currency}. "
                "Please update your payment method.",
                "Invoice: {invoice_url}",
            ],
        ),
    },
    EmailKind.DELETION_CONFIRMATION: {
        "fr": (
            "Confirmez la suppression de votre compte",
            [
                "Bonjour {name},",
                "Vous avez demandé la suppression de votre compte. Confirmez cette "
                "demande en ouvrant le lien ci-dessous :",
                "{confirmation_url}",
                "La suppression aura lieu le {scheduled_date}, après un délai de "
                "{cooldown_hours} heures. Vous pouvez annuler d'ici là.",
            ],
        ),
        "en": (
            "Confirm your account deletion",
            [
                "Hi {name},",
                "You asked us to delete your account. Confirm the request by "
                "opening the link below:",
                "{confirmation_url}",
                "Deletion will happen on {scheduled_date}, after a {cooldown_hours} "
                "hour cooldown. You can cancel until then.",
            ],
        ),
    },
    EmailKind.ACCOUNT_DELETED: {
        "fr": (
            "Votre compte a été supprimé",
            [
                "Bonjour {name},",
                "Votre compte et vos données ont été supprimés.",
                "{refund_line}",
            ],
        ),
        "en": (
            "Your account has been deleted",
            [
                "Hi {name},",
                "Your account and data have been deleted.",
                "{refund_line}",
            ],
        ),
    },
    EmailKind.QUOTA_WARNING: {
        "fr": (
            "Plus que {remaining} lettres disponibles",
            [
                "Bonjour {name},",
                "Il vous reste {remaining} lettres sur {max_letters} pour cette période.",
            ],
        ),
        "en": (
            "Only {remaining} letters left",
            [
                "Hi {name},",
                "You have {remaining} of {max_letters} letters left this period.",
            ],
        ),
    },
    EmailKind.QUOTA_LIMIT_REACHED: {
        "fr": (
            "Limite de lettres atteinte",
            [
                "Bonjour {name},",
                "Vous avez utilisé vos {max_letters} lettres. Votre quota sera "
                "renouvelé le {reset_date}, ou passez à Premium dès maintenant.",
            ],
        ),
        "en": (
            "Letter limit reached",
            [
                "Hi {name},",
                "You have used all {max_letters} letters. Your quota renews on "
                "{reset_date}, or upgrade to Premium now.",
            ],
        ),
    },
}

_REFUND_LINES = {
    "fr": "Un remboursement de {amount} a été émis sur votre moyen de paiement.",
    "en": "A refund of {amount} has been issued to your payment method.",
}


class _SafeDict(dict):
    def __missing__(self, key: str) -> str:
        return ""


def format_amount(amount_minor: int | None, currency: str = "eur") -> str:
    """Render minor currency units as e.g. '9.99 EUR'."""
    if amount_minor is None:
        return ""
    return f"{amount_minor / 100:.2f} {currency.upper()}"


def resolve_language(language: str | None, default: str = "fr") -> str:
    if language in SUPPORTED_LANGUAGES:
        return language  # type: ignore[return-value]
    return default


def render(kind: EmailKind, language: str | None, context: dict[str, Any]) -> RenderedEmail:
    """Render one lifecycle email in the requested language."""
    lang = resolve_language(language)
    ctx = _SafeDict({key: "" if value is None else value for key, value in context.items()})

    if kind == EmailKind.ACCOUNT_DELETED and ctx.get("refund_amount"):
        ctx["refund_line"] = _REFUND_LINES[lang].format(
            amount=format_amount(ctx["refund_amount"], ctx.get("currency") or "eur")
        )

    subject_tpl, paragraphs = _COPY[kind][lang]
    subject = subject_tpl.format_map(ctx)
    lines = [p.format_map(ctx) for p in paragraphs]
    lines = [line for line in lines if line.strip()]

    escaped = _SafeDict({k: html_escape(str(v)) for k, v in ctx.items()})
    html_lines = [p.format_map(escaped) for p in paragraphs]
    html_paragraphs = "\n".join(
        f'<p style="margin: 0 0 16px; font-size: 15px; line-height: 1.6; color: #3f3f46;">{line}</p>'
        for line in html_lines
        if line.strip()
    )
    html_body = f"""\
<!DOCTYPE html>
<html lang="{lang}">
<head>
  <meta charset="utf-8">
  <meta name="viewport" content="width=device-width, initial-scale=1.0">
</head>
<body style="margin: 0; padding: 0; background-color: #f4f4f5;
             font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Helvetica, Arial, sans-serif;">
  <table role="presentation" width="100%" cellpadding="0" cellspacing="0"
         style="background-color: #f4f4f5;">
    <tr>
      <td align="center" style="padding: 40px 16px;">
        <table role="presentation" width="100%" cellpadding="0" cellspacing="0"
               style="max-width: 520px; background-color: #ffffff; border-radius: 8px;">
          <tr>
            <td style="padding: 32px;">
{html_paragraphs}
            </td>
          </tr>
        </table>
      </td>
    </tr>
  </table>
</body>
</html>"""

    return RenderedEmail(subject=subject, html_body=html_body, text_body="\n\n".join(lines))

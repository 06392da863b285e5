from datetime import date
from html import escape
from typing import Optional

from .utils import parse_json_field

NAME_PLACEHOLDER = "[Name]"
CITY_PLACEHOLDER = "Ort"
COMPANY_PLACEHOLDER = "[Firma]"
ADDRESS_PLACEHOLDER = "[Anschrift]"

CLAUSES = [
    ("1. Präambel", [
        "Die CC CULINARY COLLECTIVE GmbH ist eine Plattform, die Gastronomie-Marken mit Cafés, Restaurants und "
        "Einzelhandelsgeschäften zusammenbringt. Ziel ist es, die Umsätze der Partner durch die Eröffnung von "
        "Shop-in-Shop- und Cloud-Kitchen-Konzept-Filialen zu steigern und die Kosten von Restaurants mit "
        "verschiedenen Dienstleistungen zu reduzieren.",
        "Das Restaurant/Café beabsichtigt, die Dienstleistungen der CC CULINARY COLLECTIVE GmbH in Anspruch zu "
        "nehmen und in seinen Räumlichkeiten Marken der Plattform zu führen.",
    ]),
    ("2. Vertragsgegenstand", [
        "Ziel der Plattform ist es, ihren Mitgliedern durch Nutzung gemeinsamer kommerzieller Ressourcen "
        "wirtschaftliche Vorteile zu verschaffen.",
        "Die CC-Plattform überwacht und koordiniert die Geschäftsbeziehungen sowie Qualitätsstandards aller "
        "teilnehmenden Mitgliedsunternehmen.",
        "Nach Zustimmung der CC CULINARY COLLECTIVE GmbH und des Markeninhabers nimmt die Shop-in-Shop-Filiale "
        "ihren Betrieb auf.",
        "In einem Umkreis von mindestens 2 km um die Shop-in-Shop-Filiale darf keine weitere Filiale der gleichen "
        "Marke eröffnet werden.",
        "Der Restaurantbesitzer verpflichtet sich, das vom Markeninhaber festgelegte Menü in gleicher Weise zu "
        "produzieren, die Qualitätsstandards einzuhalten und die erforderlichen Produkte vom Markeninhaber oder "
        "einem von ihm bestimmten Lieferanten zu beziehen.",
    ]),
    ("3. Vertragslaufzeit und Kündigung", [
        "Die Vereinbarung wird auf unbestimmte Zeit geschlossen.",
        "Beide Parteien können die Vereinbarung mit einer Frist von drei (3) Monaten zum Monatsende ordentlich "
        "kündigen.",
        "Eine fristlose Kündigung ist insbesondere bei wiederholten oder erheblichen Verstößen, bei Insolvenz "
        "oder bei Einstellung der Geschäftstätigkeit für mehr als 30 Tage möglich.",
    ]),
    ("4. Übertragung von Rechten und Pflichten", [
        "Beide Vertragsparteien dürfen Rechte und Pflichten aus dieser Vereinbarung mit Zustimmung der jeweils "
        "anderen Partei auf Dritte übertragen.",
    ]),
    ("5. Wettbewerbsverbot", [
        "Der Lizenznehmer verpflichtet sich, weder selbst noch über Dritte ein mit den Marken konkurrierendes "
        "Geschäftskonzept im Vertragsgebiet zu betreiben. Das Wettbewerbsverbot gilt auch für zwei (2) Jahre "
        "nach Ablauf der Vereinbarung.",
    ]),
    ("6. Haftung", [
        "Die CC CULINARY COLLECTIVE GmbH haftet nur bei Vorsatz oder grober Fahrlässigkeit. Ereignisse höherer "
        "Gewalt gelten nicht als Vertragsverstoß.",
    ]),
    ("7. Vertraulichkeit und Datenschutz", [
        "Vertragsbezogene Informationen sind vertraulich zu behandeln. Diese Pflicht gilt auch zwei (2) Jahre "
        "nach Vertragsbeendigung fort.",
        "Beide Parteien sind eigenständig für den Schutz personenbezogener Daten verantwortlich.",
    ]),
    ("8. Schlussbestimmungen", [
        "Änderungen oder Ergänzungen dieser Vereinbarung bedürfen der Schriftform.",
        "Sollten einzelne Bestimmungen unwirksam sein, bleibt die Wirksamkeit der übrigen Regelungen unberührt.",
        "Es gilt deutsches Recht. Gerichtsstand ist Berlin.",
    ]),
]


def format_contract_date(day: date) -> str:
    return day.strftime("%d.%m.%Y")


def contract_fields(lead: dict) -> dict:
    """Values substituted into the contract; missing values become placeholders."""
    company = lead.get("company_name") or lead.get("lead_name") or ""
    street = lead.get("address_line1") or ""
    city = lead.get("city") or ""
    address = ", ".join(p for p in (street, lead.get("pincode") or "", city) if p)
    owner = ""
    owner_address = ""
    businesses = parse_json_field(lead.get("custom_businesses"), [])
    if isinstance(businesses, list) and businesses and isinstance(businesses[0], dict):
        first = businesses[0]
        owner = first.get("ownerDirector") or ""
        if first.get("street"):
            owner_address = f"{first['street']}, {first.get('postalCode') or ''} {first.get('city') or ''}".strip()
    return {
        "company": company or COMPANY_PLACEHOLDER,
        "address": address or ADDRESS_PLACEHOLDER,
        "owner": owner or NAME_PLACEHOLDER,
        "owner_address": owner_address or address or ADDRESS_PLACEHOLDER,
        "city": city or CITY_PLACEHOLDER,
    }


def render_contract(lead: dict, today: Optional[date] = None) -> str:
    values = {k: escape(v) for k, v in contract_fields(lead).items()}
    signed_on = format_contract_date(today or date.today())
    clauses = "\n".join(
        f'    <p class="clause-title">{escape(title)}</p>\n    <ol type="a">\n'
        + "\n".join(f"      <li>{escape(text)}</li>" for text in items)
        + "\n    </ol>"
        for title, items in CLAUSES
    )
    return f"""
<div class="contract-document">
  <h3>MITGLIEDSVERTRAG</h3>
  <p>geschlossen zwischen</p>
  <p>CC CULINARY COLLECTIVE GmbH, Hohenzollerndamm 58, 14199 Berlin</p>
  <p>– nachfolgend „CC CULINARY COLLECTIVE“ genannt –</p>
  <p>und</p>
  <table class="parties">
    <tr><td>Name und Anschrift des Restaurants/Cafés</td><td><strong>{values['company']}</strong><br/>{values['address']}</td></tr>
    <tr><td>Inhaber des Restaurants/Cafés</td><td>{values['owner']}</td></tr>
    <tr><td>wohnhaft in</td><td>{values['owner_address']}</td></tr>
  </table>
  <p>– nachfolgend „Restaurant/Café“ genannt –</p>
  <div class="clauses">
{clauses}
  </div>
  <table class="signatures">
    <tr>
      <td>
        <p>{values['city']}, den {signed_on}<br/>Restaurant/Café<br/><strong>{values['company']}</strong><br/>{values['owner']}, Inhaber/Geschäftsführer<br/>Unterschrift:</p>
        <div id="customer-signature"></div>
      </td>
      <td>
        <p>Berlin, den {signed_on}<br/>CC CULINARY COLLECTIVE GmbH<br/>Geschäftsführung<br/>Unterschrift:</p>
      </td>
    </tr>
  </table>
</div>
"""

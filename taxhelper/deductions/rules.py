"""
Keyword rules mapping merchants and descriptions to deduction categories.
Keywords are matched case-insensitively as substrings of merchant and description.
"""

from taxhelper.deductions.types import DeductionRule
from taxhelper.models.enums import DeductionCategory

DEDUCTION_RULES: list[DeductionRule] = [
    # ── Business travel ──────────────────────────────────────
    DeductionRule(
        id="travel_rideshare",
        category=DeductionCategory.BUSINESS_TRAVEL,
        keywords=["uber", "lyft", "taxi", "cab", "ride", "airport"],
        deduction_percent=1.0,
        irs_category="Travel",
        base_confidence=0.35,
    ),
    DeductionRule(
        id="travel_airfare",
        category=DeductionCategory.BUSINESS_TRAVEL,
        keywords=["airline", "flight", "delta", "southwest", "jetblue", "expedia", "boarding"],
        deduction_percent=1.0,
        irs_category="Travel",
        base_confidence=0.4,
    ),
    DeductionRule(
        id="travel_lodging",
        category=DeductionCategory.BUSINESS_TRAVEL,
        keywords=["hotel", "marriott", "hilton", "hyatt", "airbnb", "motel", "lodging"],
        deduction_percent=1.0,
        irs_category="Travel",
        base_confidence=0.4,
    ),
    # ── Home office ──────────────────────────────────────────
    DeductionRule(
        id="home_office_internet",
        category=DeductionCategory.HOME_OFFICE,
        keywords=["internet", "comcast", "xfinity", "fios", "spectrum", "broadband", "wifi"],
        deduction_percent=0.4,
        irs_category="Home office - utilities",
        base_confidence=0.3,
        requires=["works_from_home"],
    ),
    DeductionRule(
        id="home_office_equipment",
        category=DeductionCategory.HOME_OFFICE,
        keywords=["desk", "office chair", "monitor", "ikea", "webcam", "headset"],
        deduction_percent=1.0,
        irs_category="Home office - equipment",
        base_confidence=0.3,
        requires=["works_from_home"],
    ),
    # ── Office supplies ──────────────────────────────────────
    DeductionRule(
        id="office_supplies",
        category=DeductionCategory.OFFICE_SUPPLIES,
        keywords=["staples", "office depot", "officemax", "printer", "toner", "stationery", "postage"],
        deduction_percent=1.0,
        irs_category="Supplies",
        base_confidence=0.4,
    ),
    DeductionRule(
        id="office_software",
        category=DeductionCategory.OFFICE_SUPPLIES,
        keywords=["adobe", "github", "dropbox", "zoom", "slack", "notion", "software", "jetbrains"],
        deduction_percent=1.0,
        irs_category="Supplies - software",
        base_confidence=0.35,
        requires=["is_freelancer"],
    ),
    # ── Professional development ─────────────────────────────
    DeductionRule(
        id="education_courses",
        category=DeductionCategory.PROFESSIONAL_DEVELOPMENT,
        keywords=[
            "udemy", "coursera", "course", "conference", "workshop",
            "seminar", "training", "certification", "bootcamp",
        ],
        deduction_percent=1.0,
        irs_category="Education",
        base_confidence=0.45,
    ),
    DeductionRule(
        id="education_books",
        category=DeductionCategory.PROFESSIONAL_DEVELOPMENT,
        keywords=["o'reilly", "manning", "textbook", "technical book", "pluralsight"],
        deduction_percent=1.0,
        irs_category="Education",
        base_confidence=0.35,
    ),
    # ── Health ───────────────────────────────────────────────
    DeductionRule(
        id="health_medical",
        category=DeductionCategory.HEALTH,
        keywords=[
            "pharmacy", "cvs", "walgreens", "rite aid", "prescription",
            "doctor", "dental", "clinic", "medical", "hospital",
        ],
        deduction_percent=1.0,
        irs_category="Medical and dental expenses",
        base_confidence=0.35,
    ),
    DeductionRule(
        id="health_premiums",
        category=DeductionCategory.HEALTH,
        keywords=["health insurance", "premium", "blue cross", "aetna", "kaiser", "cigna"],
        deduction_percent=1.0,
        irs_category="Medical - insurance premiums",
        base_confidence=0.35,
    ),
    # ── Charity ──────────────────────────────────────────────
    DeductionRule(
        id="charity_donations",
        category=DeductionCategory.CHARITY,
        keywords=[
            "donation", "charity", "red cross", "unicef", "goodwill",
            "salvation army", "nonprofit", "foundation",
        ],
        deduction_percent=1.0,
        irs_category="Charitable contributions",
        base_confidence=0.45,
    ),
]

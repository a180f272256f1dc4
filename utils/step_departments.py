"""
Step name to department resolution.

Used by the workflow definition catalog when a step entry does not name its
department explicitly.
"""

from models.status import Department

STEP_DEPARTMENTS = {
    # Prepress
    "Design": Department.PREPRESS,
    "Design Review": Department.PREPRESS,
    "Pre-Press Setup": Department.PREPRESS,
    "Prepress Setup": Department.PREPRESS,
    "File Preparation": Department.PREPRESS,
    "QA Review (Design)": Department.PREPRESS,
    "QA Review": Department.PREPRESS,
    "CTP": Department.PREPRESS,
    "Plate Making": Department.PREPRESS,
    "Plate Generation": Department.PREPRESS,
    # Press floor
    "Printing": Department.PRODUCTION,
    "Main Printing": Department.PRODUCTION,
    "Production Run": Department.PRODUCTION,
    "Screen Preparation": Department.PRODUCTION,
    "Stencil Creation": Department.PRODUCTION,
    "Ink Mixing": Department.PRODUCTION,
    "Ink Preparation": Department.PRODUCTION,
    "Setup Registration": Department.PRODUCTION,
    "Machine Setup": Department.PRODUCTION,
    "Color Matching": Department.PRODUCTION,
    "Test Print": Department.PRODUCTION,
    "Curing/Drying": Department.PRODUCTION,
    "Drying": Department.PRODUCTION,
    "Screen Printing": Department.PRODUCTION,
    # Cutting
    "Cutting": Department.CUTTING,
    "Die Cutting": Department.CUTTING,
    "Paper Cutting": Department.CUTTING,
    "Press Cutting": Department.CUTTING,
    "Trimming": Department.CUTTING,
    # Finishing
    "Finishing": Department.FINISHING,
    "Lamination": Department.FINISHING,
    "UV Coating": Department.FINISHING,
    "Varnishing": Department.FINISHING,
    "Embossing": Department.FINISHING,
    "Debossing": Department.FINISHING,
    "Foil Stamping": Department.FINISHING,
    "Creasing": Department.FINISHING,
    "Folding": Department.FINISHING,
    "Perforation": Department.FINISHING,
    "Scoring": Department.FINISHING,
    "Gluing": Department.FINISHING,
    "Pasting": Department.FINISHING,
    "Binding": Department.FINISHING,
    "Corner Rounding": Department.FINISHING,
    "Hole Punching": Department.FINISHING,
    "String Attachment": Department.FINISHING,
    # Printing departments
    "Offset Printing": Department.OFFSET_PRINTING,
    "Digital Printing": Department.DIGITAL_PRINTING,
    # Quality
    "Quality Check": Department.QA,
    "Quality Inspection": Department.QA,
    "Final QA": Department.QA,
    "Ready": Department.QA,
    # Dispatch
    "Packaging": Department.LOGISTICS,
    "Packing": Department.LOGISTICS,
    "Final Count": Department.LOGISTICS,
    "Shipping Prep": Department.LOGISTICS,
    "Dispatch": Department.LOGISTICS,
    # Stores
    "Material Procurement": Department.INVENTORY,
    "Material Issuance": Department.INVENTORY,
    "Excess": Department.INVENTORY,
    "Out Source": Department.EXTERNAL,
}

_LOWER_STEP_DEPARTMENTS = {name.lower(): dept for name, dept in STEP_DEPARTMENTS.items()}

# Ordered keyword rules: (required keywords, excluded keywords, department)
KEYWORD_RULES = [
    (("design", "ctp", "plate"), (), Department.PREPRESS),
    (("cut", "die", "trim"), ("finish",), Department.CUTTING),
    (("offset",), (), Department.OFFSET_PRINTING),
    (("digital",), (), Department.DIGITAL_PRINTING),
    (("print",), ("finish", "varnish", "lamination"), Department.PRODUCTION),
    (
        ("finish", "varnish", "lamination", "uv", "foil", "emboss", "deboss", "pasting", "eyelet"),
        (),
        Department.FINISHING,
    ),
    (("quality", "qa", "ready"), (), Department.QA),
    (("pack", "dispatch", "shipping"), (), Department.LOGISTICS),
    (("material", "procurement", "issuance", "excess"), (), Department.INVENTORY),
]


def department_for_step(step_name: str) -> Department:
    """
    Resolve the department that owns a step.

    Resolution order: exact name, case-insensitive name, keyword rules,
    then Prepress as the final fallback.

    Args:
        step_name: Display name of the step

    Returns:
        Owning Department
    """
    if step_name in STEP_DEPARTMENTS:
        return STEP_DEPARTMENTS[step_name]

    lowered = step_name.strip().lower()
    if lowered in _LOWER_STEP_DEPARTMENTS:
        return _LOWER_STEP_DEPARTMENTS[lowered]

    for keywords, excluded, department in KEYWORD_RULES:
        if any(k in lowered for k in keywords) and not any(x in lowered for x in excluded):
            return department

    return Department.PREPRESS

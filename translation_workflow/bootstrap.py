"""Bootstrap utilities to seed the engine with representative data."""
from __future__ import annotations

from datetime import date, timedelta

import structlog

from .engine import WorkflowEngine
from .models import Actor, ProjectCreate, Role

logger = structlog.get_logger(__name__)

DEMO_OWNER = Actor(user_id="demo-owner")
DEMO_TRANSLATOR = "demo-translator"
DEMO_REVIEWER = "demo-reviewer"

# (source, target, reuse count, quality)
MEMORY_SEED = [
    ("Welcome to our platform", "Bienvenido a nuestra plataforma", 45, 98),
    ("Thank you for your purchase", "Gracias por su compra", 32, 95),
    ("Please contact customer support", "Por favor contacte al soporte al cliente", 28, 92),
    ("Your account has been created", "Su cuenta ha sido creada", 21, 96),
]

GLOSSARY_SEED = [
    (
        "Privacy Policy",
        "Política de Privacidad",
        "Legal",
        "A statement explaining how personal data is collected and used",
    ),
    (
        "Machine Learning",
        "Aprendizaje Automático",
        "Technology",
        "Systems that improve through experience without explicit programming",
    ),
    ("User Interface", "Interfaz de Usuario", "Technology", "The means by which a user interacts with a system"),
    ("Terms of Service", "Términos de Servicio", "Legal", None),
    ("Return Policy", "Política de Devoluciones", "Marketing", None),
]

DEMO_CONTENT = (
    "Welcome to our platform\n"
    "Read our Privacy Policy before you continue.\n"
    "Your account has been created\n"
    "Our User Interface adapts to your language."
)


def seed_initial_data(engine: WorkflowEngine) -> bool:
    """Populate an empty engine with curated demo data.

    Returns ``False`` when the engine already holds projects.
    """

    if engine.state.list_projects():
        return False

    with engine.state.transaction():
        for source, target, uses, quality in MEMORY_SEED:
            entry = engine.memory.record(source, target, "English", "Spanish", quality=quality, human_reviewed=True)
            engine.state.put_memory_entry(entry.model_copy(update={"frequency": uses}))

        for term, translation, domain, definition in GLOSSARY_SEED:
            engine.glossary.add_term(term, translation, domain=domain, definition=definition)

        project = engine.projects.create_project(
            DEMO_OWNER,
            ProjectCreate(
                name="Website Localization",
                description="Marketing site copy for the Spanish and French launch.",
                source_language="English",
                target_languages=["Spanish", "French"],
                due_date=date.today() + timedelta(days=14),
            ),
        )
        engine.projects.grant_role(project.id, DEMO_OWNER, DEMO_TRANSLATOR, Role.TRANSLATOR)
        engine.projects.grant_role(project.id, DEMO_OWNER, DEMO_REVIEWER, Role.REVIEWER)
        engine.projects.add_document(
            project.id,
            DEMO_OWNER,
            "homepage.txt",
            DEMO_CONTENT,
            assigned_translator=DEMO_TRANSLATOR,
        )

    logger.info("Demo data seeded", project_id=project.id, memory_entries=len(MEMORY_SEED))
    return True

"""Built-in prompt template library.

Each template is a ready-made text-to-video prompt. Loading one into a
session skips media analysis: the template prompt becomes the master prompt
text and is structured into scenes directly.
"""

from pydantic import BaseModel, ConfigDict


class PromptTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str
    category: str
    prompt: str


TEMPLATES: tuple[PromptTemplate, ...] = (
    PromptTemplate(
        id="neon-chase",
        title="Neon Rain Chase",
        category="Action",
        prompt=(
            "A low-angle tracking shot follows a matte-black motorcycle weaving through "
            "rain-soaked downtown traffic at night, neon signage smearing across the wet "
            "asphalt, the camera whipping around as the rider cuts between two buses, "
            "then a slow-motion close-up of spray lifting off the rear tire as sirens "
            "flare red and blue in the reflections."
        ),
    ),
    PromptTemplate(
        id="alpine-dawn",
        title="Alpine Dawn",
        category="Nature",
        prompt=(
            "An aerial drone shot glides over a jagged alpine ridge at first light, "
            "low clouds pooling in the valley below, golden sun breaking over the peaks "
            "and painting the snow in warm amber, then descending slowly toward a still "
            "glacial lake that mirrors the sky."
        ),
    ),
    PromptTemplate(
        id="noir-office",
        title="Noir Detective Office",
        category="Drama",
        prompt=(
            "A black-and-white static wide shot of a cramped detective's office, venetian "
            "blind shadows striping the walls, cigarette smoke curling through a single "
            "shaft of streetlight, then a slow push-in on the detective's face as a phone "
            "rings on the cluttered desk."
        ),
    ),
    PromptTemplate(
        id="product-macro",
        title="Luxury Product Macro",
        category="Commercial",
        prompt=(
            "A macro slider shot glides across a brushed-titanium wristwatch resting on "
            "black velvet, a soft key light revealing fine engraving on the bezel, the "
            "second hand sweeping in crisp focus as a shallow depth of field melts the "
            "background into soft bokeh."
        ),
    ),
    PromptTemplate(
        id="market-documentary",
        title="Night Market Documentary",
        category="Documentary",
        prompt=(
            "Handheld documentary footage moves through a crowded night market, steam "
            "rising from food stalls under strings of warm bulbs, vendors calling out "
            "as the camera pauses on a cook flipping noodles in a roaring wok, then "
            "pulls back to reveal the bustling street."
        ),
    ),
)

_BY_ID = {template.id: template for template in TEMPLATES}


def list_templates() -> list[PromptTemplate]:
    return list(TEMPLATES)


def get_template(template_id: str) -> PromptTemplate:
    """Look up a template by id.

    Raises:
        KeyError: If no template has the given id.
    """
    try:
        return _BY_ID[template_id]
    except KeyError:
        raise KeyError(f"Unknown template: {template_id}") from None

"""Backend-specific request payloads built from a generic GenerationRequest."""

from dataclasses import dataclass, field

from mockforge.models.job import JobType
from mockforge.services.generation.prompt_validator import validate_prompt

DEFAULT_SIZE = 1024
UPSCALE_SIZE = 2048

FABRIC_COLORS = {
    "black": "black",
    "white": "white",
    "gray": "heather gray",
    "grey": "heather grey",
    "color": "colored",
}

PRODUCT_NAMES = {
    "tshirt": "t-shirt",
    "hoodie": "hoodie",
    "tank": "tank top",
    "shirts": "t-shirt",
    "hoodies": "hoodie",
}

PLACEMENTS = {
    "front-center": "centered on the chest area of the shirt",
    "left-pocket": "small, positioned on the left chest pocket area",
    "back-only": "large, centered on the back of the shirt",
    "pocket-front-back-full": "small on the front left pocket and large on the back",
}


@dataclass(frozen=True)
class GenerationRequest:
    """Backend-neutral description of one generation step."""

    job_type: JobType
    input: dict = field(default_factory=dict)

    @property
    def prompt(self) -> str:
        return validate_prompt(self.input.get("prompt"))

    @property
    def image_url(self) -> str:
        """Image the step operates on (resolved by the dependency resolver)."""
        url = self.input.get("garment_image_url") or self.input.get("image_url")
        if not url:
            raise ValueError(f"{self.job_type.value} request has no input image")
        return url

    @property
    def size(self) -> tuple[int, int]:
        return (
            int(self.input.get("width") or DEFAULT_SIZE),
            int(self.input.get("height") or DEFAULT_SIZE),
        )


def build_image_payload(model_id: str, request: GenerationRequest) -> dict:
    """Text-to-image input tuned per model family."""
    payload: dict = {"prompt": request.prompt}

    if "google/" in model_id or "imagen" in model_id:
        payload.update(aspect_ratio="1:1", safety_filter_level="block_only_high", output_format="png")
    elif "black-forest-labs/" in model_id or "flux" in model_id:
        payload.update(raw=False, aspect_ratio="1:1", output_format="png", safety_tolerance=2)
    elif "leonardoai/" in model_id or "lucid-origin" in model_id:
        width, height = request.size
        payload.update(width=width, height=height, num_outputs=1, output_format="png")
    elif "recraft-ai/" in model_id:
        width, height = request.size
        payload.update(size=f"{width}x{height}", style="realistic_image")
    else:
        payload.update(aspect_ratio="1:1", output_format="png")

    return payload


def build_mockup_prompt(request: GenerationRequest) -> str:
    """Compositing instructions for placing the design on a garment."""
    product_type = request.input.get("product_type") or "tshirt"
    shirt_color = request.input.get("shirt_color") or "black"
    placement = request.input.get("print_placement") or "front-center"
    template = request.input.get("template") or "flat_lay"

    fabric = FABRIC_COLORS.get(shirt_color, "black")
    product_name = PRODUCT_NAMES.get(product_type, "t-shirt")
    placement_desc = PLACEMENTS.get(placement, PLACEMENTS["front-center"])

    if template == "lifestyle":
        style = "Professional lifestyle photography with natural lighting."
    else:
        style = "Professional studio lighting, clean background, high quality product photography."

    return (
        f"Create a product mockup: apply the graphic design from the input image "
        f"{placement_desc} on a {fabric} {product_name}. Make it look like a real DTF "
        f"printed transfer. Do not modify, distort or recolor the design. {style}"
    )


def build_mockup_payload(request: GenerationRequest, base_image_url: str = "") -> dict:
    images = [base_image_url, request.image_url] if base_image_url else [request.image_url]
    return {
        "prompt": build_mockup_prompt(request),
        "image_input": images,
        "aspect_ratio": "1:1",
        "output_format": "png",
    }


def build_upscale_payload(request: GenerationRequest) -> dict:
    return {
        "image": request.image_url,
        "style": "realistic_image",
        "upscale": True,
        "size": f"{UPSCALE_SIZE}x{UPSCALE_SIZE}",
    }


def build_background_removal_payload(request: GenerationRequest) -> dict:
    return {"image_url": request.image_url, "size": "auto", "format": "png"}

# =============================================================================
# Pasture Biomass Estimator - Vision Prompt Builder
# =============================================================================
# Assembles the instruction sent to the remote vision-language model: the
# five target quantities, the strict JSON reply contract and the domain
# hints. When a successful local prediction is available, a summary of it is
# placed before the instruction as context to refine, never to copy.
# =============================================================================

from typing import Optional

from shared.schemas import LocalPrediction

PROMPT_VERSION = "2"

SYSTEM_PROMPT = "You are an expert in pasture biomass analysis."

_ANALYSIS_INSTRUCTION = """\
You are an agronomy expert specialised in pasture biomass. Analyse the attached
photograph of a pasture and estimate its biomass components (in grams).

TASK:
Estimate the following components:

1. **DryGreen** - dry mass of green plant material (quality forage)
2. **DryClover** - dry mass of clover, if present
3. **DryDead** - dry mass of dead or senescent material
4. **DryTotal** - total dry biomass
5. **Gdm** - Green Dry Matter, the forage actually available

INSTRUCTIONS:
- Consider vegetation density, colour and approximate sward height
- Identify clover, green grass and dead material
- Base your estimates on the visual appearance of the sward
- Give pasture management recommendations
- State your confidence in the estimate as a number between 0 and 1

REPLY WITH STRICT JSON IN EXACTLY THIS SHAPE:
```json
{{
  "Id": "[generated UUID]",
  "Title": "Pasture Biomass Analysis",
  "Description": "[short description of the pasture condition]",
  "DryGreen": [number],
  "DryClover": [number],
  "DryDead": [number],
  "DryTotal": [number],
  "Gdm": [number],
  "Recommendations": "[advice for the farmer, 2-3 sentences]",
  "Confidence": [number between 0 and 1]
}}
```

[VERY IMPORTANT]
- Reply ONLY with the JSON, no additional text
- All numeric values must be non-negative and realistic for a pasture
- DryTotal = DryGreen + DryClover + DryDead
- Gdm is approximately 85% of DryGreen
- If the image is NOT a pasture, set all values to 0 and explain why in Recommendations
- Write Title, Description and Recommendations in {language}
"""

_LOCAL_HINT_TEMPLATE = """\
Local Model Analysis Results:
- Dry Green Biomass (predicted): {dry_green:.2f}g
- Dry Clover Biomass (predicted): {dry_clover:.2f}g
- Dry Dead Material (predicted): {dry_dead:.2f}g
- Total Dry Biomass (predicted): {dry_total:.2f}g
- GDM - Green Dry Matter (predicted): {gdm:.2f}g
- Model Confidence: {confidence:.0%}

Please analyse this pasture image and refine these predictions based on visual analysis.
Provide realistic estimates rather than repeating these numbers.
"""


def format_local_hint(prediction: LocalPrediction) -> str:
    """Render a successful local prediction as human-readable context."""
    return _LOCAL_HINT_TEMPLATE.format(
        dry_green=prediction.dry_green,
        dry_clover=prediction.dry_clover,
        dry_dead=prediction.dry_dead,
        dry_total=prediction.dry_total,
        gdm=prediction.gdm,
        confidence=prediction.confidence,
    )


class VisionPromptBuilder:
    """
    Deterministic builder of the remote analysis prompt.

    Args:
        response_language: Language requested for the prose fields of the reply.
    """

    def __init__(self, response_language: str = "English"):
        self._instruction = _ANALYSIS_INSTRUCTION.format(language=response_language)

    @property
    def instruction(self) -> str:
        """The fixed instruction without any local hint."""
        return self._instruction

    def build(self, local_hint: Optional[LocalPrediction] = None) -> str:
        """
        Build the prompt text for one remote call.

        Args:
            local_hint: Local prediction to include as context. Ignored when
                        None or unsuccessful.

        Returns:
            The instruction, preceded by the hint section when one applies.
        """
        if local_hint is None or not local_hint.success:
            return self._instruction
        return format_local_hint(local_hint) + "\n\n" + self._instruction

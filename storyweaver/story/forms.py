from typing import Any, Dict, Mapping

from flask_wtf import FlaskForm
from werkzeug.datastructures import MultiDict
from wtforms import BooleanField, IntegerField, StringField, TextAreaField
from wtforms.validators import DataRequired, Length, NumberRange, Optional


class BuildStoryForm(FlaskForm):
    class Meta:
        csrf = False

    text = TextAreaField("Source text", validators=[DataRequired(), Length(max=200_000)])
    style = StringField("Visual style", validators=[Optional(), Length(max=200)])
    segments = IntegerField("Segments", validators=[Optional(), NumberRange(min=1, max=50)])
    max_perspectives = IntegerField("Perspectives", validators=[Optional(), NumberRange(min=0, max=20)])
    max_interactive_turns = IntegerField(
        "Interactive turns",
        validators=[Optional(), NumberRange(min=1, max=100)],
        description="Branch depth after which the story is forced to end",
    )
    preload_images = BooleanField("Pre-generate segment images")
    preload_analyses = BooleanField("Pre-generate segment analyses")
    preload_rewrites = BooleanField("Pre-generate segment rewrites")


BUILD_FIELD_ALIASES: Dict[str, str] = {
    "text": "text",
    "style": "style",
    "segments": "segments",
    "maxPerspectives": "max_perspectives",
    "maxInteractiveTurns": "max_interactive_turns",
    "preGenerateOriginalImages": "preload_images",
    "preGenerateOriginalAnalyses": "preload_analyses",
    "preGenerateOriginalPovContents": "preload_rewrites",
}


def form_data_from_json(payload: Mapping[str, Any], aliases: Mapping[str, str]) -> MultiDict:
    """Map a camelCase JSON body onto form field names.

    Booleans are kept as-is so ``BooleanField`` sees ``False`` rather than
    the truthy string ``"False"``; other scalars are passed as text.
    """

    data: Dict[str, Any] = {}
    for json_key, field_name in aliases.items():
        value = payload.get(json_key)
        if value is None or isinstance(value, (dict, list)):
            continue
        data[field_name] = value if isinstance(value, bool) else str(value)
    return MultiDict(data)

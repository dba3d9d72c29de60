# pyright: reportUnusedImport=false
# flake8: noqa

from .lazy_dict import LazyLoadingDict
from .prompts import (
    PromptDefinition,
    prompt_library,
    create_prompt,
    create_prompt_template,
)

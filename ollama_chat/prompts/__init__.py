"""提示词模板加载工具。

模板以 Markdown 文本存放在本目录，用 {seed} 之类的占位符标记插入位置。
"""

from pathlib import Path


PROMPTS_DIR = Path(__file__).resolve().parent


def load_prompt(name: str) -> str:
    """按名称读取提示词模板，例如 "title" -> title_prompt.md。"""

    fname = PROMPTS_DIR / f"{name}_prompt.md"
    return fname.read_text(encoding="utf-8")


def render_title_prompt(seed: str, template: str | None = None) -> str:
    """把种子文本套进标题模板。只替换 {seed}，种子中的花括号原样保留。"""

    tpl = template if template is not None else load_prompt("title")
    return tpl.replace("{seed}", seed)

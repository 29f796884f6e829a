from boat_rag.agent.policy import HEADINGS, apply_policy, enforce_sections, list_items, section_body


def test_enforce_sections_drops_junk_and_reorders() -> None:
    text = (
        "Sure! Here you go.\n\n"
        "**Step-by-step**\n1. Close the seacock\n2. Open strainer\n\n"
        "**Random Thoughts**\nignore me\n\n"
        "**In a nutshell**\nClean the strainer. It takes ten minutes. Do it monthly. Extra sentence."
    )

    enforced = enforce_sections(text)

    assert enforced == (
        "**In a nutshell**\nClean the strainer. It takes ten minutes. Do it monthly.\n\n"
        "**Step-by-step**\n1. Close the seacock\n2. Open strainer"
    )


def test_colon_headings_and_bullet_normalization() -> None:
    text = "Safety:\n- Wear gloves\n* Kill the breaker\n\nWhat's next:\nBook a haul-out."

    enforced = enforce_sections(text)

    assert enforced.startswith("**⚠️ Safety**\n• Wear gloves\n• Kill the breaker")
    assert section_body(enforced, "next") == "Book a haul-out."


def test_inline_numbered_steps_are_split() -> None:
    enforced = enforce_sections("## Step by step\n1. Drain the tank. 2. Refill it.")

    assert list_items(section_body(enforced, "steps")) == ["Drain the tank.", "Refill it."]


def test_section_caps_are_applied() -> None:
    steps = "\n".join(f"{idx}. Step {idx}" for idx in range(1, 20))

    enforced = enforce_sections(f"**Step-by-step**\n{steps}")

    assert len(list_items(section_body(enforced, "steps"))) == 12


def test_headings_follow_canonical_order() -> None:
    text = "\n\n".join(f"**{heading}**\nline for {idx}." for idx, heading in enumerate(reversed(HEADINGS)))

    enforced = enforce_sections(text)

    positions = [enforced.index(f"**{heading}**") for heading in HEADINGS]
    assert positions == sorted(positions)


def test_apply_policy_keeps_raw_text_when_nothing_survives() -> None:
    assert apply_policy("Just a plain sentence.") == "Just a plain sentence."


def test_policy_strips_preamble_and_unsupported_headings() -> None:
    raw = "random preamble\n\n**In a nutshell**\nShort answer.\n\n**Unsupported Heading**\nShould vanish."

    enforced = apply_policy(raw)

    assert enforced == "**In a nutshell**\nShort answer."


def test_unrecognized_colon_heading_closes_section() -> None:
    raw = "**In a nutshell**\nShort answer.\n\nTroubleshooting:\nShould vanish."

    assert apply_policy(raw) == "**In a nutshell**\nShort answer."

# Copyright (c) 2025 CoReason, Inc.
#
# This software is proprietary and dual-licensed.
# Licensed under the Prosperity Public License 3.0 (the "License").
# A copy of the license is available at https://prosperitylicense.com/versions/3.0.0
# For details, see the LICENSE file.
# Commercial use beyond a 30-day trial requires a separate license.
#
# Source Code: https://github.com/CoReason-AI/coreason_oidc_rp

"""
Parsing of `response_mode=form_post` answers: an HTML page with an auto-submitting form
whose inputs carry the authorization response.
"""

from urllib.parse import urlencode

import lxml.html
from lxml import etree
from pydantic import BaseModel, ConfigDict, Field

from coreason_oidc_rp.exceptions import MessageValidationError


class FormPostResponse(BaseModel):
    """
    The form found in a form_post page.

    Attributes:
        action (str | None): The form target, normally the RP redirect_uri.
        method (str): The form method, lower-cased.
        fields (dict[str, str]): Named inputs and their values.
    """

    model_config = ConfigDict(frozen=True)

    action: str | None = None
    method: str = "post"
    fields: dict[str, str] = Field(default_factory=dict)

    def to_query_string(self) -> str:
        """The fields as a query string, ready for the authorization response parsers."""
        return urlencode(self.fields)


def parse_form_post(html: str | bytes) -> FormPostResponse:
    """
    Extracts the first form of a form_post page.

    Raises:
        MessageValidationError: If the page cannot be parsed or holds no form.
    """
    try:
        document = lxml.html.fromstring(html)
    except (etree.ParserError, etree.XMLSyntaxError, ValueError) as e:
        raise MessageValidationError(f"Malformed form_post response: {e}") from e

    forms = document.xpath("//form")
    if not forms:
        raise MessageValidationError("No form found in form_post response.")
    form = forms[0]

    fields: dict[str, str] = {}
    for element in form.xpath(".//input[@name]"):
        fields[element.get("name")] = element.get("value", "")

    return FormPostResponse(
        action=form.get("action"),
        method=(form.get("method") or "post").lower(),
        fields=fields,
    )

"""Contact tools: address books and vCards."""

from __future__ import annotations

from pydantic import Field

from dav_mcp.core.registry import ToolCategory, ToolGroup
from dav_mcp.dav import ical
from dav_mcp.dav.client import DavClient
from dav_mcp.tools._common import (
    VCARD_CONTENT_TYPE,
    ToolArgs,
    object_filename,
    object_ref,
    require_updates,
    tool_result,
)


class ListAddressBooksArgs(ToolArgs):
    pass


class ListContactsArgs(ToolArgs):
    addressbook_url: str = Field(description="URL of the address book collection")


class ContactFields(ToolArgs):
    given_name: str | None = None
    family_name: str | None = None
    email: str | None = None
    phone: str | None = None
    organization: str | None = None
    note: str | None = None


class CreateContactArgs(ContactFields):
    addressbook_url: str = Field(description="URL of the address book collection")
    full_name: str = Field(min_length=1)


class UpdateContactArgs(ContactFields):
    contact_url: str = Field(description="URL of the vCard resource")
    full_name: str | None = None
    etag: str | None = Field(default=None, description="Only update if the ETag still matches")


class DeleteContactArgs(ToolArgs):
    contact_url: str = Field(description="URL of the vCard resource")
    etag: str | None = None


class AddressBookMultiGetArgs(ToolArgs):
    addressbook_url: str = Field(description="URL of the address book collection")
    contact_urls: list[str] = Field(min_length=1, description="URLs of the vCard resources")


class AddressBookQueryArgs(ToolArgs):
    addressbook_url: str = Field(description="URL of the address book collection")
    name: str | None = Field(default=None, description="Substring of the formatted name")
    email: str | None = None
    phone: str | None = None
    organization: str | None = None


def _card_fields(args: ContactFields, full_name: str | None) -> ical.Fields:
    return ical.vcard_fields(
        full_name=full_name,
        given_name=args.given_name,
        family_name=args.family_name,
        email=args.email,
        phone=args.phone,
        organization=args.organization,
        note=args.note,
    )


def _summaries(cards) -> list[dict]:  # noqa: ANN001
    return [{**object_ref(card), **ical.summarize_vcard(card.data)} for card in cards]


def contacts_tools(client: DavClient) -> ToolGroup:
    """Build the contacts tool group bound to ``client``."""
    group = ToolGroup(ToolCategory.CONTACTS)

    @group.tool("list_addressbooks", ListAddressBooksArgs, requires_session=False)
    async def list_addressbooks(args: ListAddressBooksArgs) -> dict:
        """List the address books available to the configured account."""
        books = await client.fetch_address_books()
        return tool_result([book.model_dump() for book in books])

    @group.tool("list_contacts", ListContactsArgs)
    async def list_contacts(args: ListContactsArgs) -> dict:
        """List all contacts in an address book."""
        cards = await client.fetch_vcards(args.addressbook_url)
        return tool_result(_summaries(cards))

    @group.tool("create_contact", CreateContactArgs)
    async def create_contact(args: CreateContactArgs) -> dict:
        """Create a contact in an address book."""
        uid = ical.new_uid()
        data = ical.build_vcard(uid, _card_fields(args, args.full_name))
        created = await client.create_object(
            args.addressbook_url,
            object_filename(uid, ".vcf"),
            data,
            content_type=VCARD_CONTENT_TYPE,
        )
        return tool_result({**object_ref(created), "uid": uid})

    @group.tool("update_contact", UpdateContactArgs)
    async def update_contact(args: UpdateContactArgs) -> dict:
        """Update fields of an existing contact. Fields that are not given stay unchanged."""
        fields = _card_fields(args, args.full_name)
        require_updates(fields, "contact")

        current = await client.fetch_object(args.contact_url)
        data = ical.update_object(current.data, "VCARD", fields)
        updated = await client.update_object(
            args.contact_url,
            data,
            content_type=VCARD_CONTENT_TYPE,
            etag=args.etag or current.etag,
        )
        return tool_result({**object_ref(updated), **ical.summarize_vcard(data)})

    @group.tool("delete_contact", DeleteContactArgs)
    async def delete_contact(args: DeleteContactArgs) -> dict:
        """Delete a contact."""
        await client.delete_object(args.contact_url, etag=args.etag)
        return tool_result({"deleted": True, "url": args.contact_url})

    @group.tool("addressbook_query", AddressBookQueryArgs)
    async def addressbook_query(args: AddressBookQueryArgs) -> dict:
        """Search contacts whose name, email, phone or organization contains the given text."""
        prop_filters = {
            name: value
            for name, value in (
                ("FN", args.name),
                ("EMAIL", args.email),
                ("TEL", args.phone),
                ("ORG", args.organization),
            )
            if value
        }
        if not prop_filters:
            raise ValueError("addressbook_query needs at least one search field")
        cards = await client.fetch_vcards(args.addressbook_url, prop_filters=prop_filters)
        return tool_result(_summaries(cards))

    @group.tool("addressbook_multi_get", AddressBookMultiGetArgs)
    async def addressbook_multi_get(args: AddressBookMultiGetArgs) -> dict:
        """Fetch several contacts by URL in one request. Unknown URLs are left out."""
        cards = await client.multiget_vcards(args.addressbook_url, args.contact_urls)
        return tool_result(_summaries(cards))

    return group

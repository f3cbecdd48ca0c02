import json

import click
import requests

from moolre.models import Channel, IdKind

CHANNEL_NAMES = [channel.name for channel in Channel]


def print_response(response: requests.Response):
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)

@click.group()
@click.option('--server-url', default="http://localhost:8000", envvar="MOOLRE_SERVER_URL", help='Base URL of the local API')
@click.pass_context
def cli(ctx, server_url):
    ctx.obj = server_url.rstrip("/")

@cli.command()
@click.option('--channel', type=click.Choice(CHANNEL_NAMES, case_sensitive=False), default="BANK", help='Destination channel')
@click.option('--recipient', type=str, prompt="Account or wallet number", help='Account or wallet number')
@click.option('--routing-code', type=str, default=None, help='Bank routing code (bank transfers only)')
@click.option('--account-name', type=str, default=None, help='Account holder name to compare against')
@click.pass_obj
def validate(server_url: str, channel: str, recipient: str, routing_code: str, account_name: str):
    """Resolve the holder name of an account."""
    response = requests.post(
        f"{server_url}/api/v1/validate",
        json={
            "channel": Channel[channel.upper()].value,
            "recipient": recipient,
            "routing_code": routing_code,
            "account_name": account_name,
        },
    )
    print_response(response)

@cli.command()
@click.option('--channel', type=click.Choice(CHANNEL_NAMES, case_sensitive=False), prompt="Channel", help='Destination channel')
@click.option('--recipient', type=str, prompt="Account or wallet number", help='Account or wallet number')
@click.option('--amount', type=str, prompt="Amount", help='Amount to send, two decimal places at most')
@click.option('--currency', type=str, default=None, help='Currency code, defaults to the server setting')
@click.option('--routing-code', type=str, default=None, help='Bank routing code (bank transfers only)')
@click.option('--account-name', type=str, default=None, help='Account holder name (bank transfers only)')
@click.option('--reference', type=str, default=None, help='Reference, also used as the external reference')
@click.option('--description', type=str, default="", help='Free-text description')
@click.option('--recipient-phone', type=str, default=None, help='Phone to notify the recipient on')
@click.option('--sender-phone', type=str, default=None, help='Phone to notify the sender on')
@click.pass_obj
def transfer(server_url: str, channel: str, recipient: str, amount: str, currency: str, routing_code: str,
             account_name: str, reference: str, description: str, recipient_phone: str, sender_phone: str):
    """Disburse funds, asking for confirmation if the account name check fails."""
    payload = {
        "channel": Channel[channel.upper()].value,
        "recipient": recipient,
        "amount": amount,
        "currency": currency,
        "routing_code": routing_code,
        "account_name": account_name,
        "reference": reference,
        "description": description,
        "recipient_phone": recipient_phone,
        "sender_phone": sender_phone,
    }
    response = requests.post(f"{server_url}/api/v1/transfers", json=payload)
    if response.status_code == 409:
        click.echo(response.json()["error"])
        if not click.confirm("Do you want to proceed anyway?"):
            return
        response = requests.post(f"{server_url}/api/v1/transfers", json={**payload, "confirmed": True})
    print_response(response)

@cli.command()
@click.option('--id', 'identifier', type=str, default=None, help='Transaction id or external reference')
@click.option('--external', is_flag=True, help='Treat the id as an external reference')
@click.pass_obj
def status(server_url: str, identifier: str, external: bool):
    """Check a transfer's status, or refresh the current transfer when no id is given."""
    if identifier is None:
        response = requests.post(f"{server_url}/api/v1/transfers/current/refresh")
    else:
        id_kind = IdKind.EXTERNAL_REFERENCE if external else IdKind.TRANSACTION_ID
        response = requests.post(
            f"{server_url}/api/v1/status",
            json={"id": identifier, "id_kind": id_kind.value},
        )
    print_response(response)

@cli.command()
@click.option('--recipient', type=str, multiple=True, required=True, help='Recipient phone, may be repeated')
@click.option('--message', type=str, prompt="Message", help='Message body')
@click.option('--sender-id', type=str, default=None, help='Sender id, defaults to the server setting')
@click.pass_obj
def sms(server_url: str, recipient: tuple[str, ...], message: str, sender_id: str):
    """Send an SMS to one or more recipients."""
    response = requests.post(
        f"{server_url}/api/v1/sms",
        json={
            "messages": [{"recipient": phone, "message": message} for phone in recipient],
            "sender_id": sender_id,
        },
    )
    print_response(response)

if __name__ == "__main__":
    cli()

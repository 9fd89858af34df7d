from enquiry_relay.main import run

run()

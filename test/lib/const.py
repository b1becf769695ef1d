STREAM_START = """<stream:stream xmlns="jabber:client"
                   xmlns:stream="http://etherx.jabber.org/streams"
                   id="test-stream"
                   version="1.0"
                   from="test.test">
"""

STREAM_HEADER = (
    "<stream:stream xmlns='jabber:client' "
    "xmlns:stream='http://etherx.jabber.org/streams' "
    "id='%s' version='1.0' from='%s'>"
)

FEATURES_STARTTLS = """
    <stream:features>
        <starttls xmlns='urn:ietf:params:xml:ns:xmpp-tls'><required/></starttls>
    </stream:features>
"""

FEATURES_SASL = """
    <stream:features>
        <mechanisms xmlns='urn:ietf:params:xml:ns:xmpp-sasl'>
            <mechanism>PLAIN</mechanism>
        </mechanisms>
    </stream:features>
"""

FEATURES_BIND = """
    <stream:features>
        <bind xmlns='urn:ietf:params:xml:ns:xmpp-bind'/>
        %s
    </stream:features>
"""

ROSTER_VER_FEATURE = "<ver xmlns='urn:xmpp:features:rosterver'/>"

TLS_PROCEED = "<proceed xmlns='urn:ietf:params:xml:ns:xmpp-tls'/>"

SASL_SUCCESS = "<success xmlns='urn:ietf:params:xml:ns:xmpp-sasl'/>"

BIND_RESULT = """
    <iq type='result' id='%s'>
        <bind xmlns='urn:ietf:params:xml:ns:xmpp-bind'><jid>%s</jid></bind>
    </iq>
"""

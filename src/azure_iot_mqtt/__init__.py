"""
Azure IoT Hub device client over plain MQTT.

Parses the device connection string, signs SAS tokens, keeps one MQTT session
to the hub with bounded reconnection, and routes cloud-to-device messages,
desired-property patches and twin responses to application callbacks.
"""

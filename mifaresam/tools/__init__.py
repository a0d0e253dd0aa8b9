"""CRC and secure-messaging helpers for SAM communication."""